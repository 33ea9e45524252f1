"""Pydantic schemas for request/response validation."""

from .booking import *  # noqa: F403
from .calendar import *  # noqa: F403
from .common import *  # noqa: F403
from .health import *  # noqa: F403
from .ledger import *  # noqa: F403
from .marketplace import *  # noqa: F403
from .pricing import *  # noqa: F403
