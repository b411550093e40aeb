from __future__ import annotations
import os, sys, platform
import ctypes.util
from pathlib import Path
from typing import List

webp_names = {
    "linux": "libwebp_{tag}.so",
    "windows": "libwebp_{tag}.dll",
    "darwin": "libwebp_{tag}.dylib",
}

platform_dirs = {
    "linux": "linux",
    "windows": "windows",
    "darwin": "macos",
}

width_tags = {
    4: "x86",
    8: "x64",
}

current_system = platform.system().lower()


def _app_frameworks_dir() -> Path | None:
    """If running inside a macOS .app bundle, return .../Contents/Frameworks, else None."""
    if current_system != "darwin":
        return None
    exe = Path(sys.argv[0]).resolve()
    # .../App.app/Contents/MacOS/App
    # parents[0]=.../MacOS, [1]=.../Contents, [2]=.../App.app
    try:
        if exe.parents[2].suffix == ".app":
            return exe.parents[1] / "Frameworks"
    except IndexError:
        pass
    return None


def webp_lib_name(pointer_width: int) -> str:
    if pointer_width not in width_tags:
        raise ValueError(f"Invalid pointer width: {pointer_width}")
    if current_system not in webp_names:
        raise ValueError(f"Invalid system: {current_system}")
    return webp_names[current_system].format(tag=width_tags[pointer_width])


def webp_lib_candidates(pointer_width: int, override: str | None = None) -> List[str]:
    """Return libwebp locations to try, most specific first.

    The explicit override wins, then the width-specific binary bundled next
    to the package (or inside a frozen build), then whatever libwebp the
    system linker knows about.
    """
    name = webp_lib_name(pointer_width)
    here = Path(__file__).resolve().parent.parent  # .../webpbridge/

    candidates = []
    if override:
        candidates.append(str(Path(override).expanduser()))

    if getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS'):
        candidates.append(os.path.join(sys._MEIPASS, 'webpbridge', 'lib', platform_dirs[current_system], name))
        candidates.append(os.path.join(sys._MEIPASS, name))

    fw = _app_frameworks_dir()
    if fw is not None:
        candidates.append(str(fw / name))

    candidates.append(str(here / "lib" / platform_dirs[current_system] / name))

    system_lib = ctypes.util.find_library("webp")
    if system_lib:
        candidates.append(system_lib)

    return candidates
