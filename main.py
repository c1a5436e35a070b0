"""
main.py - PDF alt-text remediation pipeline orchestrator.

Usage:
    python main.py                              # Process all PDFs in input/
    python main.py --input file.pdf             # Process a single file
    python main.py --input-dir my_pdfs/         # Process a directory
    python main.py --output-dir results/        # Specify output directory
    python main.py --generate-alt-text          # Describe images with the vision backend
    python main.py --title "Report" --language en
"""
import argparse
import logging
import shutil
import sys
import tempfile
import time
from dataclasses import dataclass, replace
from pathlib import Path

import config
from accessibility import AccessibilityService
from models import AltTextEntry, DocumentMetadata
from storage import DocumentStorage, DocumentStore
from vision import create_vision_service


@dataclass
class PipelineResult:
    input_path: str
    output_path: str = ""
    success: bool = False
    image_count: int = 0
    wcag_level: str = ""
    report: dict = None
    error: str = ""
    duration_seconds: float = 0.0


def process_single_pdf(service: AccessibilityService, input_path: str, output_dir: str,
                       overrides: DocumentMetadata, generate_alt_text: bool = False) -> PipelineResult:
    """Process a single PDF through the full remediation pipeline."""
    result = PipelineResult(input_path=input_path)
    start_time = time.time()

    input_file = Path(input_path)
    output_path = Path(output_dir) / f"{input_file.stem}_accessible.pdf"

    try:
        # Stage 1: Register the upload
        print(f"  [1/4] Loading {input_file.name}...")
        record = service.upload_document(input_file.read_bytes(), input_file.name)
        print(f"        {record.page_count} pages, {record.file_size / 1024:.0f} KB")

        # Stage 2: Extract images and suggested metadata
        print(f"  [2/4] Extracting images...")
        images, suggested = service.process_document(record.id)
        result.image_count = len(images)
        print(f"        Found {len(images)} images")
        print(f"        Suggested title: {(suggested.title or '-')[:60]}, "
              f"language: {suggested.language or '-'}")

        # Stage 3: Alt text
        if generate_alt_text and images:
            print(f"  [3/4] Generating alt text with {service.vision.name}...")
            images = service.generate_alt_texts(record.id)
            described = sum(1 for img in images if img.alt_text_generated)
            print(f"        Described {described}/{len(images)} images")
        else:
            print(f"  [3/4] Alt-text generation skipped")

        # Stage 4: Remediate
        print(f"  [4/4] Adding structure tree and metadata...")
        metadata = _merge_metadata(suggested, overrides)
        alt_texts = [AltTextEntry(id=img.id, alt_text=img.alt_text or "") for img in images]
        remediation = service.remediate_document(record.id, alt_texts, metadata)
        shutil.copyfile(remediation.output_path, output_path)

        report = remediation.report
        result.output_path = str(output_path)
        result.wcag_level = report.wcag_level.value
        result.report = report.to_dict()
        print(f"        {report.alt_texts_added} alt texts, metadata: "
              f"{', '.join(report.metadata_added) or 'none'}, WCAG level: {result.wcag_level}")
        for issue in report.issues:
            print(f"        {issue.type.value.upper()}: {issue.code} - {issue.message}")

        result.success = True

    except Exception as e:
        result.error = f"{type(e).__name__}: {e}"
        print(f"        ERROR: {result.error}")

    result.duration_seconds = time.time() - start_time
    return result


def _merge_metadata(suggested: DocumentMetadata, overrides: DocumentMetadata) -> DocumentMetadata:
    """Command-line values win over suggestions."""
    changes = {
        name: getattr(overrides, name)
        for name in ("title", "author", "subject", "language")
        if getattr(overrides, name) is not None
    }
    return replace(suggested, **changes)


def main():
    parser = argparse.ArgumentParser(
        description="PDF Alt-Text Remediation Pipeline - tags images and metadata for WCAG",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                              # Process input/ -> output/
  python main.py --input report.pdf           # Single file
  python main.py --input-dir docs/ --output-dir accessible_docs/
  python main.py --generate-alt-text --vision-provider ollama
        """,
    )
    parser.add_argument("--input", "-i", help="Single PDF file to process")
    parser.add_argument("--input-dir", "-d", default="input",
                        help="Directory of PDFs to process (default: input/)")
    parser.add_argument("--output-dir", "-o", default="output",
                        help="Output directory (default: output/)")
    parser.add_argument("--title", help="Document title")
    parser.add_argument("--author", help="Document author")
    parser.add_argument("--subject", help="Document subject")
    parser.add_argument("--language", help="Document language, e.g. en-US")
    parser.add_argument("--generate-alt-text", action="store_true",
                        help="Describe images with the configured vision backend")
    parser.add_argument("--vision-provider", choices=["ollama", "gemini"],
                        help="Vision backend (default: VISION_PROVIDER or auto-detect)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose/debug logging")
    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(levelname)s [%(name)s] %(message)s",
    )

    out_dir = Path(args.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    # Collect input files
    pdf_files = []
    if args.input:
        p = Path(args.input)
        if not p.exists():
            print(f"Error: {p} does not exist")
            sys.exit(1)
        pdf_files.append(p)
    else:
        input_dir = Path(args.input_dir)
        if not input_dir.exists():
            print(f"Error: Input directory '{input_dir}' does not exist.")
            print(f"Create it and place your PDF files inside:")
            print(f"  mkdir {input_dir}")
            sys.exit(1)
        pdf_files = sorted(input_dir.glob("*.pdf"))
        if not pdf_files:
            print(f"No PDF files found in '{input_dir}/'")
            print(f"Place your PDF files in the '{input_dir}/' directory and run again.")
            sys.exit(0)

    overrides = DocumentMetadata(title=args.title, author=args.author,
                                 subject=args.subject, language=args.language)
    vision = create_vision_service(args.vision_provider) if args.generate_alt_text else None

    print(f"PDF Alt-Text Remediation Pipeline")
    print(f"=" * 50)
    print(f"Processing {len(pdf_files)} file(s)")
    print()

    results = []
    with tempfile.TemporaryDirectory() as work_dir:
        storage = DocumentStorage(Path(work_dir) / "uploads", Path(work_dir) / "output")
        service = AccessibilityService(storage, DocumentStore(), vision=vision)

        if vision is not None:
            status = service.check_vision_status()
            if not status["modelAvailable"]:
                print(f"Warning: {status['provider']} vision backend is not available; "
                      f"images will get '{config.ALT_TEXT_UNAVAILABLE}'")
                print()

        for idx, pdf_file in enumerate(pdf_files, 1):
            print(f"[{idx}/{len(pdf_files)}] Processing: {pdf_file.name}")
            result = process_single_pdf(service, str(pdf_file), str(out_dir), overrides,
                                        args.generate_alt_text)
            results.append(result)
            print()

    _print_summary(results)


def _print_summary(results: list):
    """Print a summary table of all results."""
    print("=" * 60)
    print("SUMMARY")
    print("=" * 60)

    success_count = sum(1 for r in results if r.success)
    aa_count = sum(1 for r in results if r.wcag_level == "AA")

    for r in results:
        status = r.wcag_level if r.success else "ERROR"
        name = Path(r.input_path).name
        print(f"  [{status:7s}] {name:40s} {r.image_count:3d} images ({r.duration_seconds:.1f}s)")
        if r.error:
            print(f"          Error: {r.error}")

    print()
    print(f"Total: {len(results)} | "
          f"Processed: {success_count} | "
          f"WCAG AA: {aa_count} | "
          f"Failed: {len(results) - success_count}")

    if results and any(r.output_path for r in results):
        first = next(r for r in results if r.output_path)
        print(f"\nAccessible PDFs saved to: {Path(first.output_path).parent}/")


if __name__ == "__main__":
    main()
