import logging

from fastapi import FastAPI

from checkout.api.errors import register_exception_handlers
from checkout.api.v1.checkout import router as checkout_router
from checkout.api.v1.payments import router as payments_router
from checkout.core.config import settings


class ContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        extras = []
        for key in ("session_id", "step", "attempt_id", "order_id", "reference", "category", "channel", "reason"):
            value = getattr(record, key, None)
            if value not in (None, ""):
                extras.append(f"{key}={value}")
        base = super().format(record)
        if extras:
            return f"{base} | " + " ".join(extras)
        return base


handler = logging.StreamHandler()
handler.setFormatter(ContextFormatter("%(levelname)s:%(name)s:%(message)s"))

root = logging.getLogger()
root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
root.handlers.clear()
root.addHandler(handler)

app = FastAPI(title=f"{settings.BUSINESS_NAME} Checkout", version="1.0.0")

register_exception_handlers(app)
app.include_router(checkout_router, prefix="/v1", tags=["checkout"])
app.include_router(payments_router, prefix="/v1", tags=["payments"])


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
