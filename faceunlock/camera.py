import argparse
import logging

import cv2

logger = logging.getLogger(__name__)


def open_camera(index: int = 1, fallback: int = 0) -> cv2.VideoCapture:
    """Open `index`, then `fallback`. Raises RuntimeError when neither opens."""
    cap = cv2.VideoCapture(index)
    if cap.isOpened():
        return cap
    cap.release()

    if fallback is not None and fallback != index:
        logger.warning("camera %d not available, trying %d", index, fallback)
        cap = cv2.VideoCapture(fallback)
        if cap.isOpened():
            return cap
        cap.release()

    raise RuntimeError("Camera not opened. Try changing index (0/1/2).")


def main(argv=None):
    ap = argparse.ArgumentParser(description="Camera test.")
    ap.add_argument("--camera", type=int, default=1)
    args = ap.parse_args(argv)

    cap = open_camera(args.camera)
    print("Camera test. Press 'q' to quit.")
    while True:
        ok, frame = cap.read()
        if not ok:
            print("Failed to read frame.")
            break

        cv2.imshow("Camera Test", frame)
        if (cv2.waitKey(1) & 0xFF) == ord("q"):
            break
    cap.release()
    cv2.destroyAllWindows()


if __name__ == "__main__":
    main()
