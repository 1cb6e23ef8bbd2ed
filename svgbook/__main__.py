"""
Module entry point for: python -m svgbook

Allows running the bundler directly as a module:
    python -m svgbook info <inputs...>
    python -m svgbook bundle <inputs...> [options]
    python -m svgbook pdf <inputs...> [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
