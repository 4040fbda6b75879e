from finance_tracker import create_app
from finance_tracker.sample_data import DEMO_PASSWORD, seed_demo_data


def main():
    app = create_app()
    with app.app_context():
        app.init_db()
        email = seed_demo_data(app.get_db())
    print(f"Sample data generated. Login with {email} / {DEMO_PASSWORD}")


if __name__ == "__main__":
    main()
