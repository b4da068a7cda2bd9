from wtforms import SelectField, StringField
from wtforms.validators import DataRequired, Optional, Regexp

from app.utils import ApiForm


class WithdrawForm(ApiForm):
    method = SelectField("Payout method", choices=[("standard", "Standard"), ("instant", "Instant")], default="standard")


class BankAccountForm(ApiForm):
    routing_number = StringField("Routing number", validators=[DataRequired(), Regexp(r"^\d{9}$", message="Routing number must be 9 digits.")])
    account_number = StringField("Account number", validators=[DataRequired(), Regexp(r"^\d{4,17}$", message="Account number must be 4-17 digits.")])
    account_type = SelectField("Account type", choices=[("individual", "Individual"), ("business", "Business")], validators=[DataRequired()])


class CompleteRequirementsForm(ApiForm):
    ssn_last_4 = StringField("SSN last 4", validators=[Optional(), Regexp(r"^\d{4}$", message="SSN last 4 must be exactly 4 digits.")])
