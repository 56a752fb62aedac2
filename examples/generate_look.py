#!/usr/bin/env python3
"""Generate a try-on look through a running Try-On Studio server."""

import argparse
import base64
import mimetypes
import sys
from pathlib import Path

import requests


def file_to_data_url(path: Path) -> str:
    mime = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    if path.suffix.lower() in (".heic", ".heif"):
        mime = f"image/{path.suffix.lower().lstrip('.')}"
    return f"data:{mime};base64,{base64.b64encode(path.read_bytes()).decode('ascii')}"


def main():
    parser = argparse.ArgumentParser(
        description="Try-On Studio client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Example:
    python examples/generate_look.py \\
        --prompt "Autumn street style, city background" \\
        --clothing shirt.jpg --category top \\
        --clothing jeans.png --category bottom \\
        --body-ref me.heic --mode refine --fidelity high
        """,
    )
    parser.add_argument("--prompt", type=str, required=True, help="Look description")
    parser.add_argument("--clothing", type=str, action="append", default=[], help="Wardrobe image (repeatable)")
    parser.add_argument(
        "--category",
        type=str,
        action="append",
        default=[],
        help="Category per --clothing image, in the same order",
    )
    parser.add_argument("--body-ref", type=str, default=None, help="Body reference image")
    parser.add_argument("--face", type=str, action="append", default=[], help="Face reference image (repeatable)")
    parser.add_argument(
        "--crop",
        type=str,
        action="append",
        default=[],
        metavar="INDEX:X,Y,W,H",
        help="Detail crop on the INDEX-th --clothing image, in source pixels",
    )
    parser.add_argument("--mode", type=str, choices=["preview", "refine"], default="preview")
    parser.add_argument("--fidelity", type=str, choices=["low", "medium", "high"], default="medium")
    parser.add_argument("--include-body-ref", action="store_true", help="Send the body reference in preview mode")
    parser.add_argument("--num-samples", type=int, default=1, help="Number of output images (1-4)")
    parser.add_argument("--server", type=str, default="http://127.0.0.1:3000", help="Server base URL")
    parser.add_argument("--output", type=str, default="outputs/look.png", help="Output file")
    parser.add_argument("--timeout", type=float, default=300, help="Request timeout in seconds")
    args = parser.parse_args()

    paths = [Path(p) for p in args.clothing + args.face + ([args.body_ref] if args.body_ref else [])]
    for path in paths:
        if not path.exists():
            print(f"Error: Image not found: {path}")
            sys.exit(1)

    print("Encoding images...")
    clothing = [file_to_data_url(Path(p)) for p in args.clothing]
    crops = []
    for crop_arg in args.crop:
        try:
            index, rect = crop_arg.split(":", 1)
            x, y, w, h = (float(v) for v in rect.split(","))
            image = clothing[int(index)]
        except (ValueError, IndexError):
            print(f"Error: Invalid crop {crop_arg!r}, expected INDEX:X,Y,W,H")
            sys.exit(1)
        crops.append({"image": image, "rect": {"x": x, "y": y, "w": w, "h": h}})

    body = {
        "prompt": args.prompt,
        "mode": args.mode,
        "fidelity": args.fidelity,
        "n": args.num_samples,
        "clothingImages": clothing,
        "clothingCategories": args.category,
        "clothingDetailCrops": crops,
        "faceImages": [file_to_data_url(Path(p)) for p in args.face],
        "includeBodyRefInPreview": args.include_body_ref,
    }
    if args.body_ref:
        body["bodyRefImage"] = file_to_data_url(Path(args.body_ref))

    print(f"Generating ({args.mode}, {args.fidelity})...")
    response = requests.post(f"{args.server.rstrip('/')}/api/image", json=body, timeout=args.timeout)
    data = response.json()
    if not response.ok:
        print(f"Error {response.status_code}: {data.get('error')}")
        if data.get("hint"):
            print(f"Hint: {data['hint']}")
        sys.exit(1)

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    image = data["image"]
    if image.startswith("data:"):
        output_path.write_bytes(base64.b64decode(image.split(",", 1)[1]))
    else:
        output_path.write_bytes(requests.get(image, timeout=args.timeout).content)
    print(f"Saved: {output_path}")

    metadata = data.get("metadata", {})
    print(f"\nDone! Model {metadata.get('model')} used {metadata.get('totalImageInputs')} reference images.")


if __name__ == "__main__":
    main()
