"""
auth/pkce.py -- PKCE (RFC 7636) and OAuth random-value generation.

Token generation uses authlib's generate_token(), which draws from
random.SystemRandom over the RFC 7636 unreserved character set -- the output
is URL-safe and needs no further encoding. The S256 challenge is
base64url(sha256(verifier)) without padding, computed by authlib's
create_s256_code_challenge().

Lengths:
  code_verifier -- 48 chars (RFC 7636 allows 43..128)
  state / nonce -- 32 chars (~190 bits of entropy)
"""

from __future__ import annotations

from authlib.common.security import generate_token
from authlib.oauth2.rfc7636 import create_s256_code_challenge

CODE_VERIFIER_LENGTH = 48
STATE_LENGTH = 32


def generate_code_verifier() -> str:
    return generate_token(CODE_VERIFIER_LENGTH)


def code_challenge_for(verifier: str) -> str:
    """Return the S256 code_challenge for verifier."""
    return create_s256_code_challenge(verifier)


def generate_state() -> str:
    return generate_token(STATE_LENGTH)


def generate_nonce() -> str:
    return generate_token(STATE_LENGTH)
