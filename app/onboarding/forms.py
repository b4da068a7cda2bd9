from wtforms import DateField, StringField
from wtforms.validators import Length, Optional

from app.utils import ApiForm


class OnboardingForm(ApiForm):
    first_name = StringField("First name", validators=[Optional(), Length(max=80)])
    last_name = StringField("Last name", validators=[Optional(), Length(max=80)])
    date_of_birth = DateField("Date of birth", format="%Y-%m-%d", validators=[Optional()])
    phone_number = StringField("Phone", validators=[Optional(), Length(max=32)])
    address_line1 = StringField("Address line 1", validators=[Optional(), Length(max=200)])
    address_line2 = StringField("Address line 2", validators=[Optional(), Length(max=200)])
    city = StringField("City", validators=[Optional(), Length(max=100)])
    state = StringField("State", validators=[Optional(), Length(max=100)])
    postal_code = StringField("Postal code", validators=[Optional(), Length(max=20)])
    country = StringField("Country", validators=[Optional(), Length(min=2, max=2)])
