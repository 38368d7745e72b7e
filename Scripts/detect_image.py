import argparse
import logging
from dataclasses import replace

import cv2

from fastest_kit import (
    PRESETS,
    coco_class_names,
    draw_detections,
    load_class_names,
    load_model_config,
    load_pipeline,
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run YOLO-Fastest detection on one image and draw the boxes.")
    parser.add_argument("--image", required=True, help="Path to an input image.")
    parser.add_argument("--model", required=True, help="Model file: ncnn .param, .onnx or TorchScript.")
    parser.add_argument("--weights", default=None, help="ncnn .bin weights (defaults to the .param path with .bin).")
    parser.add_argument("--config", default=None, help="JSON model config (anchors, output names, thresholds).")
    parser.add_argument(
        "--preset",
        default="yolo-fastestv2",
        choices=sorted(PRESETS),
        help="Built-in model config used when --config is not given.",
    )
    parser.add_argument("--classes", default=None, help="Class names (.toml with `classes = [...]`).")
    parser.add_argument("--conf", type=float, default=None, help="Confidence threshold (default from config, 0.3).")
    parser.add_argument("--nms", type=float, default=None, help="IoU threshold for NMS (default from config, 0.25).")
    parser.add_argument("--threads", type=int, default=None, help="Inference engine worker threads.")
    parser.add_argument("--backend", default=None, help="Force backend: ncnn / onnxruntime / torchscript.")
    parser.add_argument("--out", default=None, help="Optional output path for the annotated image.")
    parser.add_argument("--show", action="store_true", help="Show a window with the annotated image.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG prints decode internals).")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    cfg = load_model_config(args.config) if args.config else PRESETS[args.preset]
    overrides = {}
    if args.nms is not None:
        overrides["nms_threshold"] = args.nms
    if args.threads is not None:
        overrides["num_threads"] = args.threads
    if overrides:
        cfg = replace(cfg, **overrides)

    class_names = load_class_names(args.classes) if args.classes else coco_class_names()

    img = cv2.imread(args.image)
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {args.image}")

    pipeline = load_pipeline(args.model, args.weights, cfg=cfg, backend=args.backend)
    boxes = pipeline(img, thresh=args.conf)

    for box in boxes:
        name = class_names.get(box.category, str(box.category))
        print(f"{name} {box.score:.3f} {box.as_xyxy()}")
    print(f"{len(boxes)} boxes")

    vis = draw_detections(img, boxes, class_names=class_names, show_score=True)
    if args.out:
        ok = cv2.imwrite(args.out, vis)
        if not ok:
            raise RuntimeError(f"Failed to write output image: {args.out}")

    if args.show:
        cv2.imshow("detections", vis)
        cv2.waitKey(0)
        cv2.destroyAllWindows()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
