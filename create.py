# create.py: bootstrap a user (and a farm for farmers) and print its API token
from milkpick import create_app
from milkpick.extensions import db
from milkpick.models import Farm, User


def main():
    app = create_app()
    with app.app_context():
        db.create_all()
        email = input("Email: ").strip().lower()
        first_name = input("First name: ").strip()
        last_name = input("Last name: ").strip()
        phone = input("Phone (optional): ").strip()
        role = (input("Role [customer/farmer/admin]: ").strip().lower() or "customer")

        if role not in ("customer", "farmer", "admin"):
            print("Unknown role.")
            return
        if User.query.filter_by(email=email).first():
            print("User with that email already exists.")
            return

        user = User(first_name=first_name, last_name=last_name, email=email, phone=phone or None, role=role)
        db.session.add(user)
        db.session.commit()

        if role == "farmer":
            farm_name = input("Farm name: ").strip() or f"{first_name}'s Farm"
            db.session.add(Farm(farmer_id=user.id, name=farm_name, email=email, phone=phone or None))
            db.session.commit()

        print(f"{role.capitalize()} {email} created. API token: {user.api_token}")

if __name__ == "__main__":
    main()
