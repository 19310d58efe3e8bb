from smart_pivot import cli

cli.app()
