import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from gensy.config import settings

if settings.APP_ENV == "test":
    broker = StubBroker()
    broker.emit_after("process_boot")
else:
    broker = RedisBroker(url=settings.REDIS_URL)
dramatiq.set_broker(broker)

from gensy.workers.sweeper import *
