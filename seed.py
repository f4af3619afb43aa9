from datetime import datetime, timezone
from app import create_app
from extensions import db
from models import User, Organization, Donation

DEMO_ORGANIZATIONS = [
    {
        'email': 'donor@zipli.app',
        'name': 'Helsinki Bakery',
        'contact_person': 'Demo Donor',
        'contact_number': '+358401234567',
        'address': 'Mannerheimintie 1, Helsinki',
        'role': 'donor'
    },
    {
        'email': 'receiver@zipli.app',
        'name': 'Kallio Food Bank',
        'contact_person': 'Demo Receiver',
        'contact_number': '+358407654321',
        'address': 'Hämeentie 10, Helsinki',
        'role': 'receiver'
    }
]


def seed_demo():
    app = create_app()
    with app.app_context():
        db.create_all()

        for profile in DEMO_ORGANIZATIONS:
            # 1. Check if the account exists
            if User.query.filter_by(email=profile['email']).first():
                print(f"✅ {profile['email']} already exists. Skipping.")
                continue

            # 2. Create the confirmed account + organization
            print(f"🚀 Creating {profile['name']}...")
            user = User(email=profile['email'], email_confirmed_at=datetime.now(timezone.utc),
                        user_metadata={'organization_name': profile['name'], 'role': profile['role']})
            user.set_password('password123')
            db.session.add(user)
            db.session.flush()

            db.session.add(Organization(
                id=user.id,
                name=profile['name'],
                contact_person=profile['contact_person'],
                email=profile['email'],
                contact_number=profile['contact_number'],
                address=profile['address'],
                role=profile['role']
            ))

            if profile['role'] == 'donor':
                db.session.add(Donation(
                    organization_id=user.id,
                    title='Bread, 2kg',
                    description='Rye and sourdough from today',
                    quantity='2 kg',
                    location=profile['address'],
                    distance='1.2 km',
                    pickup_time='today until 18:00'
                ))

        db.session.commit()
        print("✅ Demo data ready!")


if __name__ == "__main__":
    seed_demo()
