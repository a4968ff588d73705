from ecs_exporter.cli import main

main()
