from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_mail import Mail

from .services.stripe_gateway import StripeGateway
from .services.sms_service import TwilioSms


db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
mail = Mail()
gateway = StripeGateway()
sms = TwilioSms()
