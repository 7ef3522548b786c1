"""
Shared API dependencies: the engine singleton and failure mapping.
"""

from typing import NoReturn

from fastapi import Depends, HTTPException

from liquidation_engine.config import Settings, get_settings_dep
from liquidation_engine.domain import Failure, ReasonCode
from liquidation_engine.engine import LiquidationEngine, build_engine

# Singleton engine
_engine: LiquidationEngine | None = None


def get_engine(settings: Settings = Depends(get_settings_dep)) -> LiquidationEngine:
    """Get or create the engine singleton."""
    global _engine
    # Rebuild when tests swap the data directory
    if _engine is None or _engine.settings.data_dir != settings.data_dir:
        _engine = build_engine(settings)
    return _engine


def set_engine(engine: LiquidationEngine) -> None:
    """Install a pre-built engine (tests, embedding)."""
    global _engine
    _engine = engine


def reset_engine() -> None:
    """Drop the engine singleton."""
    global _engine
    _engine = None


def current_engine() -> LiquidationEngine | None:
    return _engine


def raise_for_failure(failure: Failure) -> NoReturn:
    """Map a business failure to an HTTP error."""
    if failure.reason_code == ReasonCode.NOT_FOUND:
        status_code = 404
    elif failure.reason_code == ReasonCode.VALIDATION_ERROR:
        status_code = 422
    else:
        status_code = 409
    raise HTTPException(status_code=status_code, detail=failure.to_dict())
