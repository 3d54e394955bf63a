"""An OpenAI-compatible relay in front of the NVIDIA NIM chat completions API."""

__version__ = "0.1.0"

from .config import load_config
from .api import app
from .streaming import SSEReframer, relay_stream
from .backends import call_backend, build_upstream_request
from .shaping import shape_completion
from .utils import resolve_model
