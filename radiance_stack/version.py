"""
Version information for Radiance Stack
"""

__version__ = "1.2.0"
__version_info__ = tuple(int(part) for part in __version__.split("."))

BUILD_DATE = "2026-10-19"
DESCRIPTION = "Camera response estimation and HDR radiance merging for exposure brackets"

# Libraries whose versions matter when comparing results across machines
RUNTIME_LIBRARIES = ("numpy", "cv2", "scipy", "torch")


def get_version_string():
    """Get formatted version string"""
    return f"v{__version__}"


def get_runtime_versions():
    """Installed versions of the numeric stack, plus the CUDA build if any"""
    import importlib

    versions = {}
    for name in RUNTIME_LIBRARIES:
        module = importlib.import_module(name)
        versions[name] = getattr(module, "__version__", "unknown")

    import torch
    versions["cuda"] = torch.version.cuda if torch.cuda.is_available() else None
    return versions


def get_full_version_info():
    """Get complete version information"""
    return {
        "version": __version__,
        "version_info": __version_info__,
        "build_date": BUILD_DATE,
        "description": DESCRIPTION,
        "runtime": get_runtime_versions(),
    }
