"""Pydantic schemas for request/response validation."""

from .booking import *  # noqa: F403
from .common import *  # noqa: F403
from .health import *  # noqa: F403
from .tour import *  # noqa: F403
from .tour_instance import *  # noqa: F403
