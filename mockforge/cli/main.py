"""
Main CLI entry point for Mockforge
"""

import click

from ..core.observability import setup_logfire
from .images import images_group


@click.group()
@click.version_option(version='0.1.0')
def cli():
    """
    Mockforge - UI mockup image synthesis

    Fill the placeholder images of prompt-generated HTML screens with
    generated images, reusing earlier results from the image cache.
    """
    setup_logfire()


# Register command groups
cli.add_command(images_group)


if __name__ == '__main__':
    cli()
