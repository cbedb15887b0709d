from pgbackup.cli.app import app

app()
