"""module to hold constants used throughout the project"""
import os
import platform
from ctypes import sizeof, c_void_p

system_type = platform.system().lower()

# Width of a native pointer in this process, fixed for the life of the interpreter
POINTER_WIDTH = sizeof(c_void_p)

DATA_DIR = os.path.join(os.path.expanduser("~"), ".webpbridge-data")
LOGS_DIR = os.path.join(DATA_DIR, "logs")

# libwebp ABI stamps expected by this bridge
WEBP_ENCODER_ABI_VERSION = 0x020f
WEBP_DECODER_ABI_VERSION = 0x0209

# Oldest libwebp we accept (0.6.0)
MIN_LIBRARY_VERSION = 0x000600

WEBP_MAX_DIMENSION = 16383

# Valid tuning ranges
QUALITY_MIN = 0
QUALITY_MAX = 100
SPEED_MIN = 0
SPEED_MAX = 6
