from wtforms import StringField
from wtforms.validators import DataRequired, Email

from app.utils import ApiForm


class CheckoutForm(ApiForm):
    email = StringField("Email", validators=[DataRequired(), Email()])
