"""
Development entry point.

From the project root:

    flask --app run.py db upgrade
    flask --app run.py create-super-admin admin@example.com
    flask --app run.py seed-demo
    flask --app run.py --debug run
"""

from sitestock import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True)
