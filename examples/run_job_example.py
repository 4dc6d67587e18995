#!/usr/bin/env python3
"""
Example usage script for the vision job engine

Demonstrates:
1. Building a job from registry tool types
2. Wiring result and coordinate connections
3. Running the job on a synthetic part image
4. Printing the per-tool results
5. Saving the final overlay
"""

import argparse
import logging
import sys
from pathlib import Path

import cv2
import numpy as np
from rich import print as rprint
from rich.console import Console
from rich.table import Table

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from vision_job import ConnectionType, Pipeline
from vision_job.preprocessing import load_image

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def make_part_image() -> np.ndarray:
    """Dark background with three bright holes of different sizes and a slot."""
    image = np.full((480, 640, 3), 30, dtype=np.uint8)
    cv2.circle(image, (160, 240), 60, (220, 220, 220), -1)
    cv2.circle(image, (360, 200), 35, (220, 220, 220), -1)
    cv2.circle(image, (520, 300), 20, (220, 220, 220), -1)
    cv2.rectangle(image, (100, 400), (540, 430), (200, 200, 200), -1)
    return image


def build_job() -> Pipeline:
    """
    Grayscale -> blur -> threshold -> blob, with a caliper measuring the width
    of the largest hole. The caliper's ROI follows the blob result.
    """
    pipeline = Pipeline()

    pipeline.add_tool_by_type("grayscale")
    pipeline.add_tool_by_type("blur").configure(kernel_size=5)
    pipeline.add_tool_by_type("threshold").configure(use_otsu=True)

    blob = pipeline.add_tool_by_type("blob")
    blob.configure(min_area=200, min_circularity=0.7, sort_by="area")

    # Caliper coordinates are relative to the ROI, which becomes the blob's bounding box
    caliper = pipeline.add_tool_by_type("caliper")
    caliper.configure(
        name="Hole width",
        start_x=0, start_y=60, end_x=120, end_y=60,
        mode="edge_pair",
        polarity="any",
        expected_width=120,
        width_tolerance=10
    )

    pipeline.add_connection(blob, caliper, ConnectionType.RESULT)
    pipeline.add_connection(blob, caliper, ConnectionType.COORDINATES)

    return pipeline


def print_results(pipeline: Pipeline) -> None:
    table = Table(title="Job results")
    table.add_column("Tool")
    table.add_column("OK")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Message")

    for result in pipeline.results:
        status = "[green]yes[/green]" if result.success else "[red]no[/red]"
        table.add_row(
            result.tool_name,
            status,
            f"{result.execution_time_ms:.1f}",
            result.message
        )

    Console().print(table)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run an example inspection job")
    parser.add_argument("--image", help="Input image (default: synthetic part)")
    parser.add_argument("--overlay", default="/tmp/vision_job_overlay.png", help="Where to save the overlay")
    args = parser.parse_args()

    image = load_image(args.image) if args.image else make_part_image()

    with build_job() as pipeline:
        pipeline.set_image(image)
        pipeline.run()
        print_results(pipeline)

        blob_result = pipeline.results[3]
        if blob_result.success:
            rprint(f"[cyan]Holes found: {blob_result.data['blob_count']}[/cyan]")
            for blob in blob_result.data['blobs']:
                rprint(
                    f"  #{blob.id}: center=({blob.center_x:.1f}, {blob.center_y:.1f}) "
                    f"area={blob.area:.0f} circularity={blob.circularity:.2f}"
                )

        width_result = pipeline.results[-1]
        if width_result.success:
            rprint(f"[cyan]Largest hole width: {width_result.data['width']:.1f}px[/cyan]")

        if pipeline.overlay_image is not None:
            cv2.imwrite(args.overlay, pipeline.overlay_image)
            rprint(f"[green]Overlay saved to {args.overlay}[/green]")

    if pipeline.last_run_success:
        rprint("[bold green]Job passed[/bold green]")
        return 0

    rprint("[bold red]Job failed[/bold red]")
    return 1


if __name__ == "__main__":
    sys.exit(main())
