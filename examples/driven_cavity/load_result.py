import open_dynamics as od

kappa = 0.5
drive = 0.5
checkpoint_folder = f"./driven_cavity_kappa={kappa}_drive={drive}"

# load the averaged observables and the setup of the run
result = od.EnsembleResult.from_checkpoint(checkpoint_folder)
config = od.SimulationConfig.from_yaml(checkpoint_folder)
lindbladian = od.Lindbladian.from_checkpoint(checkpoint_folder)

print(result)
print(lindbladian)
print(f"seed of the run: {config.ensemble_config.seed}")

photon_number = result.expect[0].real
error = result.std_error[0]
for t, value, err in zip(result.times[::10], photon_number[::10], error[::10]):
    print(f"t={t:6.2f}  <n> = {value:.4f} +- {err:.4f}")

