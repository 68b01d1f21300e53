#!/usr/bin/env python3
"""
flatredact CLI - Permanently destroy sensitive content in PDFs
"""

import click
import json
import logging
import sys
from pathlib import Path

from .config import BUILTIN_RULE_NAMES, RedactionConfig
from .detect import DEFAULT_RULES, custom_rules, find_matches, select_rules
from .exceptions import RedactionError
from .layout import extract_document_runs
from .pipeline import redact_document, redact_many, sanitize_only
from .regions import load_regions
from .utils import atomic_write, format_file_size, get_pdf_info, open_document, output_name


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _load_config(config_path, **overrides) -> RedactionConfig:
    config = RedactionConfig.from_json(config_path) if config_path else RedactionConfig()
    values = {k: v for k, v in overrides.items() if v is not None}
    if values:
        config = RedactionConfig.from_dict({**config.__dict__, **values})
    return config


def _rules(patterns, regex, default_patterns=()):
    return select_rules(patterns or default_patterns, DEFAULT_RULES) + custom_rules(regex)


def _page_heights(input_pdf: Path):
    # Unrotated heights, the space regions are converted into
    with open_document(input_pdf.read_bytes()) as doc:
        return [page.cropbox.height for page in doc]


pattern_option = click.option(
    "--pattern", "patterns", multiple=True, type=click.Choice(BUILTIN_RULE_NAMES),
    help="Built-in pattern to detect (can be used multiple times)")


@click.command()
@click.argument("input_pdf", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("output_pdf", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--term", multiple=True, help="Text terms to redact (can be used multiple times)")
@pattern_option
@click.option("--regex", multiple=True, help="Custom regex patterns to redact (can be used multiple times)")
@click.option("--rects", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="JSON file with rectangle coordinates")
@click.option("--rects-scale", type=float, default=1.0, show_default=True,
              help="Scale the rectangles were drawn at (e.g. 1.5 for a 1.5x canvas)")
@click.option("--bottom-left", is_flag=True, help="Rectangles use PDF's bottom-left origin")
@click.option("--scale", type=float, help="Render scale for flattened pages (>= 1)")
@click.option("--fill", type=click.Choice(["black", "white"]), help="Fill color for redacted areas")
@click.option("--margin", type=float, help="Safety margin (points) for the corrective second pass")
@click.option("--case-sensitive", is_flag=True, help="Match terms case-sensitively")
@click.option("--workers", type=int, help="Maximum rendering processes")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="JSON configuration file")
@click.option("--report", type=click.Path(dir_okay=False, path_type=Path),
              help="Write a JSON verification report here")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def redact(input_pdf, output_pdf, term, patterns, regex, rects, rects_scale, bottom_left,
           scale, fill, margin, case_sensitive, workers, config_path, report, verbose):
    """
    Redact sensitive content from a PDF by destroying it, not covering it.

    Every page with at least one redaction is flattened to an image: ALL text
    on that page stops being selectable or searchable, not only the marked
    areas. Pages without redactions are left untouched.

    Examples:

    \b
    # Redact a name and every SSN and email address
    flatredact redact input.pdf output.pdf \\
      --term "John Q. Public" --pattern ssn --pattern email

    \b
    # Use rectangles from JSON
    flatredact redact input.pdf output.pdf --rects boxes.json
    """
    _configure_logging(verbose)

    try:
        config = _load_config(config_path, scale=scale, fill=fill, safety_margin=margin,
                              case_sensitive=case_sensitive or None, max_workers=workers)
        rules = _rules(patterns, regex, config.enabled_rules if config_path else ())

        regions = []
        if rects:
            heights = _page_heights(input_pdf) if bottom_left else None
            regions = load_regions(rects, scale=rects_scale, page_heights=heights)

        if not (term or patterns or regex or regions):
            click.echo("Nothing to redact; only sanitizing metadata", err=True)

        result = redact_document(input_pdf.read_bytes(), regions=regions, terms=term,
                                 rules=rules, config=config)
    except (RedactionError, ValueError) as e:
        raise click.ClickException(str(e))

    atomic_write(output_pdf, result.document.data)

    for rule, count in sorted(result.counts.items()):
        click.echo(f"  {rule}: {count} matches")
    click.echo(f"Redacted {len(result.regions)} regions; flattened pages: "
               f"{', '.join(str(p + 1) for p in result.document.flattened_pages) or 'none'}")

    if result.report.success:
        click.echo(f"✓ {result.report.summary()}")
    else:
        click.echo(result.report.summary(), err=True)
        for fragment in result.report.residual_fragments:
            click.echo(f"  - {fragment!r}", err=True)

    if report:
        report.write_text(json.dumps({
            "input_file": str(input_pdf),
            "output_file": str(output_pdf),
            "counts": result.counts,
            "flattened_pages": [p + 1 for p in result.document.flattened_pages],
            "verification": result.report.to_dict(),
        }, indent=2))

    click.echo(f"✓ Redaction complete: {output_pdf}")
    if not result.report.success:
        sys.exit(2)


@click.command()
@click.argument("input_pdf", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("output_pdf", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--keep-active-content", is_flag=True,
              help="Do not remove JavaScript, actions and embedded files")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def sanitize(input_pdf, output_pdf, keep_active_content, verbose):
    """
    Sanitize PDF metadata without redacting any content.
    """
    _configure_logging(verbose)
    try:
        config = RedactionConfig(strip_active_content=not keep_active_content)
        result = sanitize_only(input_pdf.read_bytes(), config=config)
    except RedactionError as e:
        raise click.ClickException(str(e))

    atomic_write(output_pdf, result.document.data)
    click.echo(f"✓ Sanitization complete: {output_pdf}")


@click.command()
@click.argument("input_pdf", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--term", multiple=True, help="Text terms to find")
@pattern_option
@click.option("--regex", multiple=True, help="Custom regex patterns to find")
@click.option("--case-sensitive", is_flag=True, help="Match terms case-sensitively")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def scan(input_pdf, term, patterns, regex, case_sensitive, verbose):
    """
    Preview what would be redacted, without changing anything.
    """
    _configure_logging(verbose)
    try:
        rules = _rules(patterns, regex)
        with open_document(input_pdf.read_bytes()) as doc:
            matches = find_matches(doc, term, rules, case_sensitive,
                                   runs_by_page=extract_document_runs(doc))
    except (RedactionError, ValueError) as e:
        raise click.ClickException(str(e))

    for match in matches:
        r = match.rect
        click.echo(f"page {match.page_index + 1}  [{match.rule}]  {match.text!r}  "
                   f"({r.x0:.1f}, {r.y0:.1f}, {r.x1:.1f}, {r.y1:.1f})")
    click.echo(f"{len(matches)} matches")


@click.command()
@click.argument("input_pdf", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def info(input_pdf):
    """
    Show page count and metadata of a PDF.
    """
    details = get_pdf_info(input_pdf)
    if not details["valid"]:
        raise click.ClickException(f"{input_pdf} is not a valid PDF file")

    click.echo(f"Pages:     {details['pages']}")
    click.echo(f"Size:      {format_file_size(details['file_size'])}")
    click.echo(f"Encrypted: {'yes' if details['encrypted'] else 'no'}")
    for key in ("title", "author", "subject", "keywords", "creator", "producer",
                "creation_date", "modification_date"):
        if details[key]:
            click.echo(f"{key.replace('_', ' ').capitalize() + ':':<11}{details[key]}")


@click.command()
@click.argument("output_dir", type=click.Path(file_okay=False, path_type=Path))
@click.argument("input_pdfs", nargs=-1, required=True,
                type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--term", multiple=True, help="Text terms to redact")
@pattern_option
@click.option("--workers", type=int, help="Maximum documents processed in parallel")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def batch(output_dir, input_pdfs, term, patterns, workers, verbose):
    """
    Redact several PDFs with the same terms and patterns.

    Each INPUT is written to OUTPUT_DIR as <name>-redacted.pdf. Without
    --pattern every built-in pattern is applied.
    """
    _configure_logging(verbose)
    output_dir.mkdir(parents=True, exist_ok=True)

    rules = select_rules(patterns or BUILTIN_RULE_NAMES, DEFAULT_RULES)
    documents = {str(path): path.read_bytes() for path in input_pdfs}
    results = redact_many(documents, terms=term, rules=rules, max_workers=workers)

    failures = 0
    written = set()
    for name, result in results.items():
        if isinstance(result, Exception):
            failures += 1
            click.echo(f"✗ {name}: {result}", err=True)
            continue

        index = 1
        while output_name(name, index) in written:
            index += 1
        target = output_dir / output_name(name, index)
        written.add(target.name)
        atomic_write(target, result.document.data)
        status = "✓" if result.report.success else "!"
        click.echo(f"{status} {name} -> {target} ({sum(result.counts.values())} matches)")

    if failures:
        sys.exit(1)


@click.group()
@click.version_option(package_name="flatredact")
def cli():
    """flatredact - Permanently destroy sensitive content in PDFs"""
    pass


# Add commands to the group
cli.add_command(redact)
cli.add_command(sanitize)
cli.add_command(scan)
cli.add_command(info)
cli.add_command(batch)


if __name__ == "__main__":
    cli()
