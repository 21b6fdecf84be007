"""
TOTP engine: secret generation, enrollment QR codes and code validation.

Everything here is a pure function of its inputs (plus the clock when no
explicit time is given). Storage of secrets is handled by TOTPRepository.
"""

import base64
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from io import BytesIO
from typing import Union

import pyotp
import qrcode

TOTP_DIGITS = 6
TOTP_INTERVAL = 30  # seconds per time step
SECRET_LENGTH = 32  # base32 characters, 160 bits

TimeLike = Union[datetime, int, float]


@dataclass(frozen=True)
class GeneratedSecret:
    """A fresh TOTP secret and the URI authenticator apps register."""

    base32: str
    provisioning_uri: str


def generate_secret(identity_label: str, issuer: str) -> GeneratedSecret:
    """
    Generate a new random TOTP secret.

    Args:
        identity_label: Account name shown in the authenticator (email)
        issuer: Issuer name shown in the authenticator

    Returns:
        GeneratedSecret with the base32 secret and its otpauth:// URI
    """
    secret = pyotp.random_base32(length=SECRET_LENGTH)
    totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)
    uri = totp.provisioning_uri(name=identity_label, issuer_name=issuer)
    return GeneratedSecret(base32=secret, provisioning_uri=uri)


def render_enrollment_image(provisioning_uri: str) -> str:
    """
    Render a provisioning URI as a scannable QR code.

    Args:
        provisioning_uri: otpauth:// URI

    Returns:
        PNG image as a data: URI, usable directly in an <img> tag
    """
    img = qrcode.make(provisioning_uri)
    buf = BytesIO()
    img.save(buf, "PNG")
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def normalize_code(code: str) -> str:
    """Strip whitespace an authenticator app or user may have added."""
    return "".join(code.split())


def _to_datetime(for_time: TimeLike | None) -> datetime:
    if for_time is None:
        return datetime.now(timezone.utc)
    if isinstance(for_time, datetime):
        return for_time
    return datetime.fromtimestamp(for_time, tz=timezone.utc)


def current_time_step(for_time: TimeLike | None = None) -> int:
    """Return the 30-second step index for a point in time."""
    return int(_to_datetime(for_time).timestamp()) // TOTP_INTERVAL


def match_time_step(
    secret: str,
    code: str,
    tolerance_steps: int = 1,
    for_time: TimeLike | None = None,
) -> int | None:
    """
    Find the time step a submitted code belongs to.

    Candidates are the current step and `tolerance_steps` steps on either
    side. Every candidate is compared, in constant time, so the response
    time does not reveal which step (if any) matched.

    Args:
        secret: Base32 TOTP secret
        code: Code submitted by the user
        tolerance_steps: Adjacent steps accepted on each side
        for_time: Reference time (defaults to now)

    Returns:
        Matching step index, or None if the code is not valid
    """
    submitted = normalize_code(code)
    if len(submitted) != TOTP_DIGITS or not submitted.isdigit():
        return None

    totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)
    step = current_time_step(for_time)

    matched: int | None = None
    for offset in range(-tolerance_steps, tolerance_steps + 1):
        candidate = totp.generate_otp(step + offset)
        if hmac.compare_digest(candidate.encode(), submitted.encode()):
            matched = step + offset
    return matched


def verify_code(
    secret: str,
    code: str,
    tolerance_steps: int = 1,
    for_time: TimeLike | None = None,
) -> bool:
    """
    Check a submitted code against a secret.

    Args:
        secret: Base32 TOTP secret
        code: Code submitted by the user
        tolerance_steps: Adjacent steps accepted on each side (1 = ±30s)
        for_time: Reference time (defaults to now)

    Returns:
        True if the code matches the current or an adjacent step
    """
    return match_time_step(secret, code, tolerance_steps, for_time) is not None
