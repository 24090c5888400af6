"""
Factor Registry
===============
Maps factor names to delivery capabilities.
"""

from typing import Any, Dict, List, Mapping
import structlog

from ..errors import ConfigurationError, UnsupportedFactor
from .models import Factor

logger = structlog.get_logger(__name__)


class FactorRegistry:
    """
    Registry of delivery factors.

    Registering an existing name overwrites it.
    """

    def __init__(self, factors: Mapping[str, Any] = None):
        self._factors: Dict[str, Factor] = {}
        for name, factor in (factors or {}).items():
            self.add(name, factor)

    def add(self, name: str, factor: Any) -> Factor:
        """
        Register a factor.

        Args:
            name: Factor name, e.g. "email" or "sms"
            factor: A ``Factor``, a mapping with ``send`` and optional
                ``settings``, or any object with a callable ``send``

        Returns:
            The normalized Factor
        """
        if not isinstance(name, str) or not name:
            raise ConfigurationError("Factor name must be a non-empty string")

        if isinstance(factor, Factor):
            send, settings = factor.send, factor.settings
        elif isinstance(factor, Mapping):
            unknown = set(factor) - {"send", "settings"}
            if unknown:
                raise ConfigurationError(
                    f"Unknown keys for factor {name}: {', '.join(sorted(unknown))}"
                )
            send, settings = factor.get("send"), factor.get("settings")
        else:
            send = getattr(factor, "send", None)
            settings = getattr(factor, "settings", None)

        if not callable(send):
            raise ConfigurationError(f"Factor {name} must expose a callable send")
        if settings is not None and not isinstance(settings, Mapping):
            raise ConfigurationError(f"Settings for factor {name} must be a mapping")

        normalized = Factor(send=send, settings=dict(settings) if settings is not None else None)
        if name in self._factors:
            logger.info("Factor overwritten", factor=name)
        self._factors[name] = normalized
        return normalized

    def get(self, name: str) -> Factor:
        """Resolve a factor, raising UnsupportedFactor if unknown."""
        try:
            return self._factors[name]
        except KeyError:
            raise UnsupportedFactor(name) from None

    def names(self) -> List[str]:
        return sorted(self._factors)

    def __contains__(self, name: object) -> bool:
        return name in self._factors

    def __len__(self) -> int:
        return len(self._factors)
