"""Service layer - FastAPI application and the workflow facade.

The application factory lives in ``budget_gateway.service.app``; it is not
imported here so that lower layers can use the resilience helpers in this
package without pulling in the web stack.
"""

from .config import GatewayConfig

__all__ = ["GatewayConfig"]
