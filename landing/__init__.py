"""Landing site asset pipeline and signup/login flow."""
