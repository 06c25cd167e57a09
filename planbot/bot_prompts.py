# planbot/bot_prompts.py

# Asked one at a time, in this order, to every user.
QUESTION_CATALOG = (
    "Are you looking for a health insurance plan?",
    "What is your family size?",
    "What is your household income?",
    "What is your gender?",
)

PLAN_PROMPT = """Based on the following details collected from the user, generate a concise and actionable plan:
{DETAILS}

Please keep the plan concise, no more than 100 words."""

PLAN_ACKNOWLEDGMENT = "Thank you for your responses! Here is the plan we created for you:"

PLAN_FALLBACK = "I'm sorry, I couldn't generate a response. Please try again."

GENERIC_APOLOGY = "Something went wrong. Please try again."
