"""
AdStitch - Entry point for python -m adstitch
"""

if __name__ == "__main__":
    from adstitch.cli import cli

    cli()
