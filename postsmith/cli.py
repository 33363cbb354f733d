"""Main CLI entry point for Postsmith."""

import click

from .commands import jobs


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Postsmith - turn a web page into a draft blog post."""
    pass


main.add_command(jobs.crawl)
main.add_command(jobs.generate)
main.add_command(jobs.publish)
main.add_command(jobs.run)


if __name__ == "__main__":
    main()
