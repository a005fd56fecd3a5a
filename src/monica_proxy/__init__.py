"""An OpenAI-compatible chat completions proxy in front of Monica's SSE feed."""

__version__ = "0.1.0"

from .config import load_config
from .api import app

from .decoder import iter_vendor_events
from .frames import FrameBuilder, ThinkState
from .streaming import stream_to_client, SSETranslationResponse
from .aggregation import aggregate_response
from .errors import ReadError, WriteError, UpstreamError
