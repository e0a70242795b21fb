from forkify_ingest.cli import cli

cli()
