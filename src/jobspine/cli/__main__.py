from jobspine.cli.app import app

app(prog_name="jobspine")
