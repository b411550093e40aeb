#!/usr/bin/env python3

import argparse
import json
import logging
import sys

from PIL import Image

from webpbridge import wbstats, webp
from webpbridge.version import __version__
from webpbridge.wpimage import WpBitmap
from webpbridge.wpnative import WpDispatch
from webpbridge.wpnative.WpErrors import WebPException
from webpbridge.wpnative.WpStructs import DistortionMetric

log = logging.getLogger(__name__)


def _load_bitmap(path, mode=None):
    with Image.open(path) as img:
        img.load()
        return WpBitmap.from_pil(img, mode)


def cmd_version(args):
    native = WpDispatch.get_native()
    print(f"webpbridge {__version__}")
    print(f"libwebp decoder {webp.get_version()}, encoder {webp.get_encoder_version()}")
    print(f"native table: {type(native).__name__} ({native.lib_path})")
    return 0


def cmd_info(args):
    with open(args.input, 'rb') as h:
        data = h.read()
    features = webp.get_info(data)
    print(f"Width:     {features.width}")
    print(f"Height:    {features.height}")
    print(f"Alpha:     {features.has_alpha}")
    print(f"Animation: {features.has_animation}")
    print(f"Format:    {features.format}")
    return 0


def cmd_decode(args):
    with open(args.input, 'rb') as h:
        data = h.read()
    bmp = webp.decode(data)
    bmp.to_pil().save(args.output)
    log.info(f"Decoded {args.input} ({bmp.width}x{bmp.height}) to {args.output}")
    return 0


def cmd_encode(args):
    bmp = _load_bitmap(args.input)
    stats = None
    lossless = args.mode != "lossy"

    if args.simple:
        if args.mode == "lossy":
            data = webp.encode_lossy(bmp, args.quality)
        elif args.mode == "lossless":
            data = webp.encode_lossless(bmp)
        else:
            log.error("near-lossless has no simple form")
            return 2
    else:
        if args.mode == "lossy":
            result = webp.encode_lossy_advanced(bmp, args.quality, args.speed, info=args.info)
        elif args.mode == "lossless":
            result = webp.encode_lossless_advanced(bmp, args.speed, info=args.info)
        else:
            quality = 60 if args.quality is None else args.quality
            speed = 9 if args.speed is None else args.speed
            result = webp.encode_near_lossless(bmp, quality, speed, info=args.info)
        data, stats = result

    with open(args.output, 'wb') as h:
        h.write(data)
    print(f"Wrote {len(data)} bytes to {args.output}")
    if stats is not None:
        print(stats.summary(lossless))
    return 0


def cmd_distortion(args):
    # Compare in a common sample order so both pictures import the same way
    source = _load_bitmap(args.source, WpBitmap.PixelFormat.BGRA)
    reference = _load_bitmap(args.reference, WpBitmap.PixelFormat.BGRA)
    metric = DistortionMetric[args.metric.upper()]
    result = webp.get_picture_distortion(source, reference, metric)
    unit = "dB" if metric != DistortionMetric.LSIM else ""
    for name, value in result._asdict().items():
        print(f"{name:10s} {value:.3f} {unit}".rstrip())
    return 0


def cmd_stats(args):
    available = WpDispatch.is_available()
    wbstats.update_process_memory_stat()
    out = {
        'native_available': available,
        'counters': wbstats.snapshot(),
        'encode_ms': dict(wbstats.ENCODE_TIMES.averages),
    }
    print(json.dumps(out, indent=2, sort_keys=True))
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog="webpbridge",
        description="webpbridge: encode, decode and inspect WebP through libwebp"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("version", help="Show bridge and libwebp versions")
    p.set_defaults(func=cmd_version)

    p = sub.add_parser("info", help="Print bitstream features of a WebP file")
    p.add_argument("input")
    p.set_defaults(func=cmd_info)

    p = sub.add_parser("decode", help="Decode a WebP file to any format Pillow can write")
    p.add_argument("input")
    p.add_argument("output")
    p.set_defaults(func=cmd_decode)

    p = sub.add_parser("encode", help="Encode an image to WebP")
    p.add_argument("input")
    p.add_argument("output")
    p.add_argument(
        "-m", "--mode",
        choices=("lossy", "lossless", "near-lossless"),
        default="lossy",
    )
    p.add_argument("-q", "--quality", type=int, default=None, help="0-100")
    p.add_argument("-s", "--speed", type=int, default=None, help="0 (fast) .. 6 (best); larger values are clamped")
    p.add_argument("--simple", action="store_true", help="Use the one-shot encoding API")
    p.add_argument("--info", action="store_true", help="Print encoder statistics")
    p.set_defaults(func=cmd_encode)

    p = sub.add_parser("distortion", help="PSNR/SSIM/LSIM between two images of the same size")
    p.add_argument("source")
    p.add_argument("reference")
    p.add_argument("--metric", choices=("psnr", "ssim", "lsim"), default="psnr")
    p.set_defaults(func=cmd_distortion)

    p = sub.add_parser("stats", help="Show native availability and runtime counters")
    p.set_defaults(func=cmd_stats)

    return parser


def main(argv=None):
    log.info(f"webpbridge version: {__version__}")
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except WebPException as e:
        log.error(f"{args.command} failed: {e}")
        return 1
    except OSError as e:
        log.error(f"{args.command}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
