"""Command-line entrypoint: audio file -> OBJ/MTL (and STL) sculpture."""

import argparse
import logging
import sys
from pathlib import Path

from analyser import AudioFileAnalyser, AudioLoadError
from capture import CaptureSession
from config import EXPORT_BASENAME
from geometry_export import export_obj, to_stl_bytes
from logging_config import setup_logging
from mesh import find_open_edges

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Capture an audio file's spectrogram and export it as a printable solid"
    )
    parser.add_argument("audio", type=Path, help="audio file to analyse")
    parser.add_argument("--output", type=Path, default=Path(EXPORT_BASENAME),
                        help="output path without extension")
    parser.add_argument("--duration", type=float, default=30.0,
                        help="seconds of audio to capture")
    parser.add_argument("--stl", action="store_true", help="also write a binary STL")
    parser.add_argument("--verify", action="store_true",
                        help="check the solid is closed before writing")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


def output_parts(output):
    """Folder and basename for the written files; a trailing .obj/.mtl/.stl is dropped"""
    name = output.name
    if output.suffix.lower() in (".obj", ".mtl", ".stl"):
        name = output.stem
    return output.parent, name


def main(argv=None):
    args = parse_args(argv)
    setup_logging(getattr(logging, args.log_level))

    try:
        analyser = AudioFileAnalyser.from_file(str(args.audio), duration=args.duration)
    except AudioLoadError as e:
        logger.error("%s", e)
        return 1

    session = CaptureSession().run(analyser)
    solid = session.preview if session.preview is not None else session.build_solid()

    if args.verify:
        open_edges = find_open_edges(solid)
        if open_edges:
            logger.error("Solid is not closed: %d open edge segments", len(open_edges))
            return 2
        logger.info("Solid is closed.")

    folder, basename = output_parts(args.output)
    obj_text, mtl_text = export_obj(solid, basename)
    obj_path = folder / f"{basename}.obj"
    mtl_path = folder / f"{basename}.mtl"
    obj_path.write_text(obj_text)
    mtl_path.write_text(mtl_text)
    print(f"OBJ saved as {obj_path}")
    print(f"MTL saved as {mtl_path}")

    if args.stl:
        stl_path = folder / f"{basename}.stl"
        stl_path.write_bytes(to_stl_bytes(solid, basename))
        print(f"STL saved as {stl_path}")

    print(f"{solid.vertex_count} vertices, {solid.face_count} faces, "
          f"{len(solid.materials)} materials")
    return 0


if __name__ == "__main__":
    sys.exit(main())
