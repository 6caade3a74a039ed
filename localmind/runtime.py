"""Runtime environment checks for the on-device accelerator backend."""

from __future__ import annotations

import functools
from typing import Any

import torch

from localmind.engine.errors import CapabilityError


@functools.lru_cache(maxsize=1)
def is_cuda_available() -> bool:
    """Check if CUDA (or ROCm through the CUDA API) is available."""
    return torch.cuda.is_available()


@functools.lru_cache(maxsize=1)
def is_mps_available() -> bool:
    """Check if the Apple Metal backend is available."""
    mps = getattr(torch.backends, "mps", None)
    return bool(mps is not None and mps.is_available())


def has_capability() -> bool:
    """True when a GPU-class accelerator can run the model."""
    return is_cuda_available() or is_mps_available()


def resolve_device(preference: str = "auto") -> str:
    if preference and preference != "auto":
        return preference
    if is_cuda_available():
        return "cuda"
    if is_mps_available():
        return "mps"
    return "cpu"


def resolve_dtype(preference: str = "auto", *, device: str = "cpu") -> torch.dtype:
    named = {
        "float16": torch.float16,
        "fp16": torch.float16,
        "bfloat16": torch.bfloat16,
        "bf16": torch.bfloat16,
        "float32": torch.float32,
        "fp32": torch.float32,
    }
    if preference and preference != "auto":
        try:
            return named[preference.lower()]
        except KeyError as exc:
            raise ValueError(f"Unsupported dtype: {preference!r}") from exc
    if device.startswith("cuda"):
        return torch.bfloat16 if torch.cuda.is_bf16_supported() else torch.float16
    if device == "mps":
        return torch.float16
    return torch.float32


def describe_capability(device_index: int = 0) -> dict[str, Any]:
    """Describe the accelerator as `{vendor, architecture, device, description, features, limits}`.

    Raises:
        CapabilityError: If no accelerator is available.
    """
    if is_cuda_available() and device_index < torch.cuda.device_count():
        props = torch.cuda.get_device_properties(device_index)
        hip = getattr(torch.version, "hip", None)
        features = ["cuda", "float16"]
        if torch.cuda.is_bf16_supported():
            features.append("bfloat16")
        total_gib = props.total_memory / (1024**3)
        return {
            "vendor": "amd" if hip else "nvidia",
            "architecture": getattr(props, "gcnArchName", None) or f"sm_{props.major}{props.minor}",
            "device": props.name,
            "description": f"{props.name} ({total_gib:.1f} GiB)",
            "features": features,
            "limits": {
                "totalMemory": int(props.total_memory),
                "multiProcessorCount": int(props.multi_processor_count),
                "computeCapability": f"{props.major}.{props.minor}",
                "deviceCount": int(torch.cuda.device_count()),
            },
        }
    if is_mps_available():
        return {
            "vendor": "apple",
            "architecture": "mps",
            "device": "mps",
            "description": "Apple Metal Performance Shaders",
            "features": ["mps", "float16"],
            "limits": {},
        }
    raise CapabilityError("No accelerator available (neither CUDA nor MPS).")
