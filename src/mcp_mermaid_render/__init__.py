"""Render Mermaid diagrams to PNG/SVG via mermaid.ink or a headless browser."""

__version__ = "1.0.0"
