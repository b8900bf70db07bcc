"""Web Push delivery through :mod:`pywebpush`."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, Mapping

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from pywebpush import WebPushException, webpush

from .errors import DeliveryPermanentFailure, DeliveryTransientFailure
from .models import PushSubscription

logger = logging.getLogger(__name__)

GONE_STATUSES = (404, 410)


class PushProvider:
    """Abstract push provider interface."""

    public_key: str = ""

    def send(self, subscription: PushSubscription, payload: Mapping[str, Any]) -> None:
        """Deliver ``payload`` to ``subscription``.

        Raises :class:`DeliveryPermanentFailure` when the provider reports
        the subscription as gone and :class:`DeliveryTransientFailure` for
        any other failure.
        """
        raise NotImplementedError


class WebPushProvider(PushProvider):
    """Send notifications with VAPID authentication."""

    def __init__(
        self,
        public_key: str = "",
        private_key: str = "",
        subject: str = "mailto:admin@example.com",
        *,
        ttl: int = 86400,
    ) -> None:
        self.public_key = public_key
        self._private_key = private_key
        self._claims: Dict[str, str] = {"sub": subject}
        self.ttl = ttl

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "WebPushProvider":
        return cls(
            public_key=cfg.get("vapid_public_key", ""),
            private_key=cfg.get("vapid_private_key", ""),
            subject=cfg.get("vapid_subject", "mailto:admin@example.com"),
            ttl=int(cfg.get("push_ttl", 86400)),
        )

    @property
    def configured(self) -> bool:
        return bool(self.public_key and self._private_key)

    def send(self, subscription: PushSubscription, payload: Mapping[str, Any]) -> None:
        if not self.configured:
            raise DeliveryTransientFailure("VAPID keys are not configured")
        try:
            webpush(
                subscription_info=subscription.subscription_info(),
                data=json.dumps(dict(payload)),
                vapid_private_key=self._private_key,
                vapid_claims=dict(self._claims),
                ttl=self.ttl,
            )
        except WebPushException as exc:
            response = getattr(exc, "response", None)
            status = getattr(response, "status_code", None)
            if status in GONE_STATUSES:
                raise DeliveryPermanentFailure(subscription.endpoint, status) from exc
            raise DeliveryTransientFailure(str(exc)) from exc
        except Exception as exc:
            raise DeliveryTransientFailure(str(exc)) from exc


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_vapid_keys() -> Dict[str, str]:
    """Return a fresh P-256 VAPID key pair as base64url strings.

    The public key is the uncompressed EC point browsers expect as
    ``applicationServerKey``; the private key is the raw 32 byte scalar.
    """

    private_key = ec.generate_private_key(ec.SECP256R1())
    private_bytes = private_key.private_numbers().private_value.to_bytes(32, "big")
    public_bytes = private_key.public_key().public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )
    return {"publicKey": _b64url(public_bytes), "privateKey": _b64url(private_bytes)}


__all__ = ["PushProvider", "WebPushProvider", "GONE_STATUSES", "generate_vapid_keys"]
