import logging
import os
from threading import Lock
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# FCM error fragments that mean the token will never work again.
_STALE_TOKEN_MARKERS = ("registration token", "invalid argument", "not registered")


class PushSender:
    """Delivers booking notifications to devices through firebase-admin.

    Disabled unless FIREBASE_CREDENTIALS_PATH points at a service account file;
    in that case ``send_notification`` is a no-op and the in-app record is the
    only delivery.
    """

    def __init__(self, credentials_path: Optional[str] = None):
        self._lock = Lock()
        self._credentials_path = credentials_path
        self._initialized = False
        self._enabled = False
        self._messaging = None

    @property
    def enabled(self) -> bool:
        self._ensure_initialized()
        return self._enabled

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            credentials_path = (self._credentials_path or os.getenv("FIREBASE_CREDENTIALS_PATH", "")).strip()
            if not credentials_path:
                self._initialized = True
                self._enabled = False
                logger.info("Booking push delivery disabled: FIREBASE_CREDENTIALS_PATH not set")
                return
            try:
                import firebase_admin
                from firebase_admin import credentials, messaging
            except ImportError:
                self._initialized = True
                self._enabled = False
                logger.exception("Booking push delivery disabled: firebase-admin is not installed")
                return

            try:
                cred = credentials.Certificate(credentials_path)
                if not firebase_admin._apps:  # pylint: disable=protected-access
                    firebase_admin.initialize_app(cred)
                self._messaging = messaging
                self._enabled = True
                logger.info("Booking push delivery initialized")
            except Exception:
                self._enabled = False
                logger.exception("Booking push delivery disabled: Firebase init failed")
            finally:
                self._initialized = True

    def send_notification(
        self,
        tokens: List[str],
        title: str,
        body: str,
        data: Dict[str, str],
    ) -> List[str]:
        """Send one message to every token; returns the tokens FCM rejected as stale."""
        self._ensure_initialized()
        if not self._enabled or not tokens:
            return []
        assert self._messaging is not None
        try:
            message = self._messaging.MulticastMessage(
                notification=self._messaging.Notification(title=title, body=body),
                tokens=tokens,
                data=data,
            )
            batch = self._messaging.send_each_for_multicast(message)
        except Exception:
            logger.exception("Push send failed for booking %s", data.get("booking_id", "-"))
            return []

        stale: List[str] = []
        for idx, response in enumerate(batch.responses):
            if response.success:
                continue
            error_text = str(response.exception).lower() if response.exception else ""
            if any(marker in error_text for marker in _STALE_TOKEN_MARKERS):
                stale.append(tokens[idx])
        if stale:
            logger.info("Dropping %d stale device tokens", len(stale))
        return stale


push_sender = PushSender()
