from typing import Optional

from gensy.models.generation import GenerationType

CREDIT_COSTS = {
    "image_generation": 2,
    "image_generation_premium": 3,
    "image_upscaling": 2,
    "image_upscaling_enhanced": 3,
    "batch_per_image": 2,
    "format_conversion": 0,
    "video_generation": 5,
}

PREMIUM_QUALITIES = ("ultra",)


def credits_for(
    type: str,
    quality: Optional[str] = None,
    count: int = 1,
    enhanced: bool = False,
) -> int:
    """Credits charged for one generation request."""
    generation_type = GenerationType(type)

    if generation_type == GenerationType.IMAGE:
        if quality in PREMIUM_QUALITIES:
            return CREDIT_COSTS["image_generation_premium"]
        return CREDIT_COSTS["image_generation"]
    if generation_type == GenerationType.UPSCALE:
        if enhanced:
            return CREDIT_COSTS["image_upscaling_enhanced"]
        return CREDIT_COSTS["image_upscaling"]
    if generation_type == GenerationType.BATCH:
        if count < 1:
            raise ValueError("A batch needs at least one image")
        return CREDIT_COSTS["batch_per_image"] * count
    if generation_type == GenerationType.CONVERSION:
        return CREDIT_COSTS["format_conversion"]
    return CREDIT_COSTS["video_generation"]
