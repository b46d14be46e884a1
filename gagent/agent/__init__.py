"""Agent run control: controller, planning, execution and the controller registry."""
