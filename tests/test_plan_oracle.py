import json
import tempfile
import unittest
from pathlib import Path

from pydantic import ValidationError

from core.exceptions import PlanningError
from core.plan_oracle import CallablePlanOracle, FilePlanOracle, StaticPlanOracle
from core.plan_schema import PlanDocument, PlanSpec
from core.types import ExecutionContext, Goal
from tests.fakes.fake_tools import make_plan

DOCUMENT = {
    "plans": [
        {"id": "quick", "strategy": "direct", "steps": [
            {"tool_id": "write_file", "parameters": {"path": "a.txt", "content": "x"},
             "estimated_resources": {"storage_mb": 1}},
            {"tool_id": "read_file", "parameters": {"path": "a.txt"}, "dependencies": ["step_1"]},
        ]},
        {"steps": [{"id": "only", "tool_id": "list_files"}]},
    ]
}


class TestPlanSchema(unittest.TestCase):

    def test_document_converts_to_plans_with_default_ids(self):
        plans = PlanDocument.model_validate(DOCUMENT).to_plans("goal_1")
        self.assertEqual([p.id for p in plans], ["quick", "plan_2"])
        self.assertEqual(plans[0].goal_id, "goal_1")
        self.assertEqual([s.id for s in plans[0].steps], ["step_1", "step_2"])
        self.assertEqual(plans[0].steps[0].estimated_resources.storage_mb, 1)
        self.assertIsNone(plans[0].steps[1].estimated_resources)
        self.assertEqual(plans[1].steps[0].id, "only")

    def test_forward_dependency_is_rejected(self):
        with self.assertRaises(ValidationError):
            PlanSpec.model_validate({"steps": [
                {"tool_id": "a", "dependencies": ["step_2"]},
                {"tool_id": "b"},
            ]})

    def test_negative_resources_are_rejected(self):
        with self.assertRaises(ValidationError):
            PlanSpec.model_validate({"steps": [
                {"tool_id": "a", "estimated_resources": {"memory_mb": -1}},
            ]})


class TestPlanOracles(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.goal = Goal("demo")
        self.context = ExecutionContext(goal=self.goal)

    async def test_static_oracle_copies_and_tags_plans(self):
        template = make_plan("p1", ["echo"])
        oracle = StaticPlanOracle([template])
        plans = await oracle.propose_plans(self.goal, self.context)
        self.assertEqual(plans[0].goal_id, self.goal.id)
        self.assertEqual(template.goal_id, "")
        self.assertIsNot(plans[0], template)

    async def test_callable_oracle_accepts_sync_and_async(self):
        def sync_fn(goal, context):
            return [make_plan("s", ["echo"])]

        async def async_fn(goal, context):
            return [make_plan("a", ["echo"])]

        self.assertEqual((await CallablePlanOracle(sync_fn).propose_plans(self.goal, self.context))[0].id, "s")
        self.assertEqual((await CallablePlanOracle(async_fn).propose_plans(self.goal, self.context))[0].id, "a")

    async def test_file_oracle_loads_document(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "plans.json"
            path.write_text(json.dumps(DOCUMENT))
            plans = await FilePlanOracle(path).propose_plans(self.goal, self.context)
        self.assertEqual(len(plans), 2)
        self.assertTrue(all(p.goal_id == self.goal.id for p in plans))

    async def test_file_oracle_errors_are_planning_errors(self):
        with tempfile.TemporaryDirectory() as tmp:
            missing = FilePlanOracle(Path(tmp) / "missing.json")
            with self.assertRaises(PlanningError):
                await missing.propose_plans(self.goal, self.context)

            bad = Path(tmp) / "bad.json"
            bad.write_text(json.dumps({"plans": [{"steps": [{"parameters": {}}]}]}))
            with self.assertRaises(PlanningError):
                FilePlanOracle(bad).load(self.goal.id)


if __name__ == "__main__":
    unittest.main()
