from core.exceptions import PlanningError


class FailingOracle:
    def __init__(self, message="oracle unavailable"):
        self.message = message

    async def propose_plans(self, goal, context):
        raise PlanningError(self.message)


class RecordingOracle:
    """Returns canned plans and remembers which goals it was asked about."""

    def __init__(self, plans):
        self.plans = plans
        self.goals = []

    async def propose_plans(self, goal, context):
        self.goals.append(goal.id)
        return list(self.plans)
