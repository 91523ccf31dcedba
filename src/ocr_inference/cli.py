"""Command-line entry point: ``ocr-inference IMAGE [options]``."""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import EngineConfig
from .exceptions import OCREngineError
from .pipeline import OCREngine, __version__
from .types import BoundingBox, OCRResult, ProcessingOptions, ProgressEvent
from .utils.config import load_config, merge_configs
from .utils.logging import setup_logging

console = Console()

VALID_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.tiff', '.tif', '.webp'}


def validate_image_path(image_path: str) -> bool:
    """Validate if image path exists and is a supported format"""
    path = Path(image_path)
    if not path.exists():
        console.print(f"[red]Error: Image file not found: {image_path}[/red]")
        return False

    if path.suffix.lower() not in VALID_EXTENSIONS:
        console.print(f"[red]Error: Unsupported image format: {path.suffix}[/red]")
        console.print(f"[yellow]Supported formats: {', '.join(sorted(VALID_EXTENSIONS))}[/yellow]")
        return False

    return True


def parse_region(value: str) -> BoundingBox:
    """Parse ``x,y,width,height`` into a BoundingBox."""
    try:
        x, y, width, height = (float(part) for part in value.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError("region must be x,y,width,height")
    return BoundingBox(x, y, width, height)


def display_result(result: OCRResult, detailed: bool = True):
    """Display an OCRResult using Rich"""
    if result.text.strip():
        console.print(Panel(f"[bold green]{result.text}[/bold green]",
                            title="Extracted Text", border_style="green"))
    else:
        console.print(Panel("[yellow]No text was detected in the image[/yellow]",
                            title="Extraction Result", border_style="yellow"))

    summary = Table(title="Summary", show_header=True, header_style="bold blue")
    summary.add_column("Metric", style="cyan")
    summary.add_column("Value", style="white")
    summary.add_row("Engine", result.engine_used)
    summary.add_row("Backend", result.backend.value)
    summary.add_row("Fallback", "yes" if result.fallback else "no")
    summary.add_row("Confidence", f"{result.confidence:.1%}")
    summary.add_row("Regions", str(result.statistics.total_regions))
    summary.add_row("Recognized", str(result.statistics.recognized_regions))
    summary.add_row("Time", f"{result.processing_time_ms:.0f} ms")
    console.print(summary)

    if detailed and result.regions:
        regions = Table(title="Regions", show_header=True, header_style="bold magenta")
        regions.add_column("#", justify="right")
        regions.add_column("Text", style="white")
        regions.add_column("Confidence", justify="right")
        regions.add_column("Box", style="dim")
        regions.add_column("Source", style="cyan")
        for index, region in enumerate(result.regions, 1):
            box = region.bbox
            regions.add_row(str(index), region.text or "[dim]<empty>[/dim]",
                            f"{region.confidence:.1%}",
                            f"{box.x:.0f},{box.y:.0f} {box.width:.0f}x{box.height:.0f}",
                            region.source)
        console.print(regions)


async def run(args: argparse.Namespace) -> int:
    overrides = {}
    if args.force_fallback:
        overrides["fallback"] = {"force": True}
    if args.backends:
        overrides["runtime"] = {"backends": [b.strip() for b in args.backends.split(",") if b.strip()]}
    config = EngineConfig.from_dict(merge_configs(load_config(args.config), overrides))
    if args.log_level is None:
        setup_logging(config.runtime.log_level)

    options = ProcessingOptions(detection_threshold=args.threshold,
                                use_angle_correction=False if args.no_angle else None)

    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                  BarColumn(), console=console, transient=True,
                  disable=args.json) as progress:
        task = progress.add_task("Initializing engine...", total=100)

        def on_progress(event: ProgressEvent):
            progress.update(task, description=event.message, completed=event.percent)

        async with OCREngine(config) as engine:
            status = engine.get_engine_info()
            if status.using_fallback and not args.json:
                console.print(f"[yellow]Using secondary engine: {status.fallback_reason}[/yellow]")

            progress.update(task, description="Processing image...", completed=0)
            if args.region is not None:
                result = await engine.process_region(args.image, args.region, options, on_progress)
            else:
                result = await engine.process_image(args.image, options, on_progress)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str))
    else:
        display_result(result, detailed=not args.simple)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(result.to_dict(), f, indent=2, ensure_ascii=False, default=str)
        if not args.json:
            console.print(f"[green]Results saved to:[/green] {output_path}")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ocr-inference",
        description="ONNX Runtime OCR with Tesseract fallback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ocr-inference receipt.jpg
  ocr-inference scan.png --region 10,20,300,40 --json
  ocr-inference page.png --config ocr.yaml --force-fallback
        """
    )
    parser.add_argument('image', help='Path to input image file')
    parser.add_argument('--config', '-c', default=None, help='Configuration file path')
    parser.add_argument('--region', '-r', type=parse_region, default=None,
                        help='Only recognize the region x,y,width,height')
    parser.add_argument('--threshold', type=float, default=None,
                        help='Detection threshold override (0-1)')
    parser.add_argument('--backends', default=None,
                        help='Backend order, comma-separated: gpu_compute,gpu_shader,vectorized')
    parser.add_argument('--no-angle', action='store_true', help='Disable angle correction')
    parser.add_argument('--force-fallback', action='store_true',
                        help='Skip the ONNX pipeline and use Tesseract')
    parser.add_argument('--json', action='store_true', help='Print the result as JSON')
    parser.add_argument('--output', '-o', default=None, help='Write the JSON result to a file')
    parser.add_argument('--simple', '-s', action='store_true', help='Show simplified output')
    parser.add_argument('--log-level', default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level')
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or "WARNING")

    if not validate_image_path(args.image):
        return 1

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user.[/yellow]")
        return 1
    except OCREngineError as e:
        console.print(f"[red]OCR failed: {e}[/red]")
        return 1
    except ValueError as e:
        console.print(f"[red]Invalid option: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
