"""Example: submit a repository and follow its workflow until it finishes."""

import asyncio

from orchestrai import WorkflowController, get_client, load_config


async def main():
    """Submit a workflow and print every new log line."""
    config = load_config()

    async with get_client(config) as client:
        controller = WorkflowController(client, config)

        printed = 0

        def on_view(view):
            nonlocal printed
            if view.workflow is None:
                return
            for entry in view.workflow.log[printed:]:
                print(entry.format())
            printed = len(view.workflow.log)
            if view.degraded:
                print(f"⚠️  {view.degraded}")

        controller.subscribe(on_view)

        workflow = await controller.submit(
            "https://github.com/acme/widget",
            mode="prompt-driven",
            prompt="Add a CI pipeline that runs the test suite",
        )
        print(f"✅ Workflow started: {workflow.id}")

        final = await controller.wait()
        print(f"🏁 {final.status.value} ({final.progress}%)")
        await controller.close()


if __name__ == "__main__":
    asyncio.run(main())
