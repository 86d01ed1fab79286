# storefront/main.py
import uvicorn

from storefront.api import create_app
from storefront.services.lock_service import LockService
from storefront.services.notification_service import NotificationService
from storefront.tasks.drain import schedule_cart_drain

app = create_app(
    lock_service=LockService(),
    notifier=NotificationService(),
    drain_scheduler=schedule_cart_drain,
    init_db=True,
)

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
