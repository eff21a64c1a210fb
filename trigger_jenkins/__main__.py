from .trigger_jenkins import cli

cli()
