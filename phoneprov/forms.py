from flask_wtf import FlaskForm


class CSRFOnlyForm(FlaskForm):
    pass
