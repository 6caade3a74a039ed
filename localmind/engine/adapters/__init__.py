# On-device runtimes
#
# Each adapter implements a common interface for:
#   - Fetching tokenizer + model artifacts (with progress)
#   - Warm-up, chat prompt rendering and token streaming
#   - Releasing accelerator memory on dispose
#
# The accelerator worker uses adapters to stay runtime-agnostic.

from .base import BaseAdapter

__all__ = ["BaseAdapter"]
